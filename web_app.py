from __future__ import annotations

import json
import logging
from typing import Optional

# Ensure rep and session logging is visible when running under uvicorn
logging.getLogger("formcoach.exercises").setLevel(logging.INFO)
logging.getLogger("formcoach.reps").setLevel(logging.INFO)
logging.getLogger("formcoach.session").setLevel(logging.INFO)

from fastapi import FastAPI, WebSocket, WebSocketDisconnect

from formcoach.detector import EXERCISE_ALIASES, EXERCISES, normalize_exercise_key
from formcoach.session import WorkoutSession
from formcoach.sound import NullBackend, SoundDispatcher

logger = logging.getLogger("formcoach.web_app")

app = FastAPI(title="FormCoach")


def _new_session(exercise: Optional[str]) -> tuple[WorkoutSession, NullBackend]:
    """Server-side session: cues are returned to the client instead of played."""
    backend = NullBackend()
    sound = SoundDispatcher(backend=backend, autostart=False)
    return WorkoutSession(exercise, sound=sound), backend


def _drain_cues(session: WorkoutSession, backend: NullBackend) -> list[str]:
    if session.sound is not None:
        session.sound.drain()
    cues = list(backend.played)
    backend.played.clear()
    return cues


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/exercises")
def exercises() -> dict:
    return {"exercises": list(EXERCISES), "aliases": dict(EXERCISE_ALIASES)}


@app.websocket("/ws/live")
async def live_socket(websocket: WebSocket) -> None:
    await websocket.accept()
    logger.info("live: connection opened")
    session, backend = _new_session(None)
    try:
        while True:
            msg = await websocket.receive_text()
            try:
                payload = json.loads(msg)
            except json.JSONDecodeError:
                logger.debug("live: ignoring undecodable message")
                continue
            if not isinstance(payload, dict):
                continue
            kind = payload.get("type")

            if kind == "start":
                exercise = payload.get("exercise")
                if normalize_exercise_key(exercise) is None:
                    await websocket.send_text(json.dumps({"type": "error", "message": f"unknown exercise: {exercise}"}))
                    continue
                session.exercise = exercise
                session.start()
                state = session.state()
            elif kind == "switch":
                exercise = payload.get("exercise")
                if normalize_exercise_key(exercise) is None:
                    await websocket.send_text(json.dumps({"type": "error", "message": f"unknown exercise: {exercise}"}))
                    continue
                session.switch(exercise)
                state = session.state()
            elif kind == "frame":
                state = session.process(payload.get("landmarks"))
            elif kind == "stop":
                summary = session.stop()
                logger.info("live: stop received, reps=%s", summary["rep_counts"])
                await websocket.send_text(json.dumps({"type": "summary", **summary}))
                await websocket.close()
                return
            else:
                continue

            state["type"] = "state"
            state["sounds"] = _drain_cues(session, backend)
            await websocket.send_text(json.dumps(state))
    except WebSocketDisconnect:
        logger.info(
            "live: client disconnected (frames=%s, reps=%s)",
            session.frames_seen,
            session.detector.get_rep_count(session.exercise),
        )
        return


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("web_app:app", host="0.0.0.0", port=8000, reload=True)
