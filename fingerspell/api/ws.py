import asyncio
import base64
import concurrent.futures
import logging
import math
import os
import time
from typing import Optional

import cv2
import numpy as np
from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from fingerspell.api.schemas.match import DecisionOut
from fingerspell.ml.engine import AttemptState, Decision, MatchEngine
from fingerspell.ml.errors import (
    AttemptInProgressError, LandmarkCountError, NoReferenceDataError, PoseUnavailableError,
)
from fingerspell.ml.hints import coaching_hint
from fingerspell.ml.landmarks import HandObservation
from fingerspell.ml.pose import HandPoseSession
from fingerspell.ml.spelling import SpellingSession

router = APIRouter()

DEBUG_WS = os.getenv("FINGERSPELL_WS_DEBUG", "0") == "1"
PING_INTERVAL_S = 10.0

logger = logging.getLogger("fingerspell.ws")


def decode_frame_bgr(data_url: str) -> np.ndarray:
    _, encoded = data_url.split(",", 1) if "," in data_url else ("", data_url)
    img_bytes = base64.b64decode(encoded)
    if not img_bytes:
        raise ValueError("empty image payload")
    img = cv2.imdecode(np.frombuffer(img_bytes, np.uint8), cv2.IMREAD_COLOR)
    if img is None:
        raise ValueError("cv2.imdecode returned None")
    return img


def parse_observation(msg: dict) -> Optional[HandObservation]:
    """
    {"landmarks": [[x, y, z] * 21] | null, "handedness": "Left" | "Right", "ts": seconds}

    ts is a client clock in seconds (not milliseconds); see parse_timestamp.
    """
    points = msg.get("landmarks")
    if not points:
        return None
    obs = HandObservation.from_raw(points, msg.get("handedness"))
    if len(obs.landmarks) != 21:
        raise LandmarkCountError(f"Expected 21 landmarks, got {len(obs.landmarks)}")
    return obs


def parse_timestamp(msg: dict) -> float:
    """Frame time in seconds. Falls back to the server clock only when ts is absent."""
    raw = msg.get("ts")
    if raw is None:
        return time.monotonic()
    if isinstance(raw, bool):
        raise ValueError(f"ts must be a number of seconds, got {raw!r}")
    ts = float(raw)
    if not math.isfinite(ts):
        raise ValueError(f"ts must be finite, got {raw!r}")
    return ts


def decision_payload(decision: Decision, spelling: Optional[SpellingSession]) -> dict:
    out = DecisionOut(**decision.to_dict()).model_dump(by_alias=True, exclude_none=True)
    payload = {"type": "decision", "symbol": decision.target_symbol, "hand": decision.target_hand.value, **out}

    if spelling is not None and spelling.record(decision):
        if spelling.is_complete:
            payload["complete"] = True
            payload["results"] = [r.__dict__ for r in spelling.results]
        else:
            payload["next"] = spelling.current
    return payload


@router.websocket("/ws/attempt")
async def attempt_ws(ws: WebSocket):
    await ws.accept()

    store = ws.app.state.store
    settings = ws.app.state.settings
    engine = MatchEngine(store, settings)
    spelling: Optional[SpellingSession] = None

    alive = True
    last_ping = time.monotonic()
    frames_in = 0
    frames_no_hand = 0
    last_debug = 0.0

    # landmarker lives in one thread, created on the first image frame
    loop = asyncio.get_running_loop()
    executor: Optional[concurrent.futures.ThreadPoolExecutor] = None
    pose: Optional[HandPoseSession] = None
    pose_error: Optional[str] = None

    def state_payload() -> dict:
        return {"type": "state", **engine.snapshot()}

    async def error(code: str, detail: str):
        await ws.send_json({"type": "error", "code": code, "detail": detail})

    async def ticker():
        nonlocal alive
        try:
            while alive:
                await asyncio.sleep(settings.tick_seconds)
                if engine.tick():
                    await ws.send_json(state_payload())
        except asyncio.CancelledError:
            return
        except (WebSocketDisconnect, RuntimeError):
            alive = False

    async def pinger():
        nonlocal last_ping, alive
        try:
            while alive:
                now = time.monotonic()
                if (now - last_ping) > PING_INTERVAL_S:
                    last_ping = now
                    await ws.send_json({"type": "ping"})
                await asyncio.sleep(0.25)
        except asyncio.CancelledError:
            return
        except (WebSocketDisconnect, RuntimeError):
            alive = False

    async def handle_observation(obs: Optional[HandObservation], ts: float):
        nonlocal frames_in, frames_no_hand, last_debug
        frames_in += 1
        if obs is None:
            frames_no_hand += 1

        decision = engine.on_frame(obs, ts)
        if decision is not None:
            await ws.send_json(decision_payload(decision, spelling))
        elif engine.state is AttemptState.SAMPLING:
            await ws.send_json({
                "type": "progress",
                "samples": engine.sample_count,
                "total": settings.sequence_length,
                "hand_visible": obs is not None,
                "hand": obs.hand.value if obs is not None and obs.hand else None,
                "hint": coaching_hint(obs.wrist) if obs is not None else "Show your hand to the camera",
            })
        else:
            await ws.send_json(state_payload())

        if DEBUG_WS and (ts - last_debug) > 1.0:
            last_debug = ts
            logger.info(
                f"frames_in={frames_in} no_hand={frames_no_hand} "
                f"state={engine.state.value} samples={engine.sample_count} gap={engine.sampler.gap}"
            )

    async def ensure_pose() -> bool:
        nonlocal executor, pose, pose_error
        if pose is not None:
            return True
        if pose_error is not None:
            await error("POSE_UNAVAILABLE", pose_error)
            return False
        if executor is None:
            executor = concurrent.futures.ThreadPoolExecutor(max_workers=1)
        try:
            pose = await loop.run_in_executor(executor, HandPoseSession)
        except PoseUnavailableError as e:
            pose_error = str(e)
            logger.error("Hand landmarker unavailable: %s", e)
            await error("POSE_UNAVAILABLE", pose_error)
            return False
        return True

    tick_task = asyncio.create_task(ticker())
    ping_task = asyncio.create_task(pinger())

    try:
        while alive:
            msg = await ws.receive_json()
            kind = msg.get("type")

            if kind == "start":
                if not store.is_loaded:
                    await error("STORE_UNAVAILABLE", "No reference vectors loaded")
                    continue
                symbol = msg.get("symbol") or (spelling.current if spelling else None)
                if not symbol:
                    await error("BAD_REQUEST", "symbol is required")
                    continue
                try:
                    engine.start(symbol, msg.get("hand"))
                except NoReferenceDataError as e:
                    await error("NO_REFERENCE_DATA", str(e))
                    continue
                except AttemptInProgressError as e:
                    await error("ATTEMPT_IN_PROGRESS", str(e))
                    continue
                except ValueError as e:
                    await error("BAD_REQUEST", str(e))
                    continue
                await ws.send_json(state_payload())

            elif kind == "spell":
                try:
                    spelling = SpellingSession(str(msg.get("name") or ""))
                except ValueError as e:
                    await error("BAD_REQUEST", str(e))
                    continue
                engine.reset()
                await ws.send_json({"type": "spelling", "letters": spelling.letters, "current": spelling.current})

            elif kind == "landmarks":
                try:
                    obs = parse_observation(msg)
                    ts = parse_timestamp(msg)
                except (LandmarkCountError, ValueError, TypeError, KeyError) as e:
                    await error("INVALID_LANDMARKS", str(e))
                    continue
                await handle_observation(obs, ts)

            elif kind == "frame":
                data = msg.get("data")
                if not isinstance(data, str):
                    await error("BAD_REQUEST", "data must be a data URL string")
                    continue
                if not await ensure_pose():
                    continue
                try:
                    frame = decode_frame_bgr(data)
                except (ValueError, cv2.error) as e:
                    await error("BAD_FRAME", str(e))
                    continue
                now = time.monotonic()
                obs = await loop.run_in_executor(executor, pose.process_frame_bgr, frame, int(now * 1000))
                await handle_observation(obs, now)

            elif kind == "reset":
                engine.reset()
                pose_error = None
                await ws.send_json(state_payload())

            elif kind == "pong":
                continue

            else:
                await error("UNKNOWN_MESSAGE", f"Unknown message type: {kind!r}")

    except WebSocketDisconnect:
        pass
    finally:
        alive = False
        engine.reset()

        tick_task.cancel()
        ping_task.cancel()
        await asyncio.gather(tick_task, ping_task, return_exceptions=True)

        if pose is not None:
            await loop.run_in_executor(executor, pose.close)
        if executor is not None:
            executor.shutdown(wait=False)
