from typing import Optional

CENTER = (0.5, 0.5)
OFFSET_THR = 0.2
DEPTH_THR = 0.2

GREAT_POSITION = "Great position! Focus on the shape."


def positional_hint(wrist) -> str:
    """
    wrist: raw (x, y, z) of landmark 0 in image coordinates.
    The display is mirrored, so a wrist left of centre means "move right".
    """
    x, y, z = float(wrist[0]), float(wrist[1]), float(wrist[2])

    if z < -DEPTH_THR:
        return "Move Hand CLOSER"
    if z > DEPTH_THR:
        return "Move Hand FARTHER"

    x_hint = ""
    if x < CENTER[0] - OFFSET_THR:
        x_hint = "Move Hand RIGHT"
    elif x > CENTER[0] + OFFSET_THR:
        x_hint = "Move Hand LEFT"

    y_hint = ""
    if y < CENTER[1] - OFFSET_THR:
        y_hint = "Move Hand DOWN"
    elif y > CENTER[1] + OFFSET_THR:
        y_hint = "Move Hand UP"

    if x_hint and y_hint:
        return f"{x_hint} & {y_hint}"
    return x_hint or y_hint or GREAT_POSITION


def shape_hint(score: int) -> str:
    if score < 50:
        return "The shape is far off. Try matching the tutorial video."
    if score < 75:
        return "Almost there! Check your finger curls."
    if score < 90:
        return "Close! Just slight adjustments needed."
    return "Perfect shape!"


def coaching_hint(wrist, score: Optional[int] = None) -> str:
    hint = positional_hint(wrist)
    if hint == GREAT_POSITION and score is not None:
        return shape_hint(score)
    return hint
