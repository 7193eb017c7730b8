"""Configuration constants for the gameplay analysis pipeline."""
import json
import os

from dotenv import load_dotenv

load_dotenv()

# Frame rate used to quantize annotation instants
FPS = float(os.getenv("ANALYZER_FPS", "30"))

# Default playhead step (milliseconds), roughly one frame at 30 fps
DEFAULT_STEP_MS = 33.33

# Detector backend: "local" (ultralytics on CPU), "modal" or "runpod"
DETECTOR_PROVIDER = os.getenv("DETECTOR_PROVIDER", "local")
DETECTOR_MODEL_PATH = os.getenv("DETECTOR_MODEL_PATH", "models/best.pt")

# Detection filtering
SCORE_THRESHOLD = float(os.getenv("DETECTOR_SCORE_THRESHOLD", "0.5"))
MAX_RESULTS = int(os.getenv("DETECTOR_MAX_RESULTS", "25"))

# Role label sets (exact match on the detector's category name)
BALL_CARRIER_LABELS = frozenset({"BALL_CARRIER", "ball_carrier", "carrier"})
DEFENDER_LABELS = frozenset({"DEFENDER", "defender"})
ATTACKER_LABELS = frozenset({"ATTACKER", "attacker"})

# Class index -> label, used when a detection comes back without a name.
# Tied to the class ordering of the trained model.
DEFAULT_FALLBACK_LABELS = {
    0: "BALL_CARRIER",
    1: "DEFENDER",
    2: "ATTACKER",
}


def load_fallback_labels() -> dict:
    """Read the index -> label table from DETECTOR_FALLBACK_LABELS (JSON object)."""
    raw = os.getenv("DETECTOR_FALLBACK_LABELS")
    if not raw:
        return dict(DEFAULT_FALLBACK_LABELS)
    data = json.loads(raw)
    return {int(k): str(v) for k, v in data.items()}


# Tag / modifier suggestions offered by the front end
TAG_OPTIONS = [
    "SPIN", "JUKE", "WALL_MOVE", "HURDLE", "TACKLE_BIG_HIT",
    "STIFF_ARM", "TACKLE_DIVE", "PASS_THROW", "PASS_CATCH", "TACKLE_WRAP",
]
MODIFIER_OPTIONS = ["LEFT", "RIGHT", "IN_AIR", "FORWARD", "ON_GROUND", "ON_SIDELINE", "ON_WALL"]
DOWN_OPTIONS = ["1", "2", "3", "4"]

# Single-key quick adds at the playhead
QUICK_ADD_KEYS = {"s": "SPIN", "j": "JUKE", "t": "TACKLE"}

# Hosts that can be previewed but not sampled frame-by-frame
RESTRICTED_HOSTS = ("www.youtube.com", "youtube.com", "youtu.be")
