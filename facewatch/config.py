import os

# Default locations of the OpenCV zoo models used by the SFace backend.
FD_MODEL_PATH = "./models/face_detection_yunet_2023mar.onnx"
FR_MODEL_PATH = "./models/face_recognition_sface_2021dec.onnx"

# InsightFace model pack used by the default backend.
INSIGHTFACE_MODEL = "buffalo_l"

# YuNet detector parameters.
DET_SCORE_THRESHOLD = 0.7
DET_NMS_THRESHOLD = 0.3
DET_TOP_K = 5000
DET_INPUT_SIZE = (400, 400)

# Frames larger than this (either side) are scaled down before detection; <= 0 disables.
DEFAULT_MAX_SIZE = 400

# Matching
UNKNOWN_LABEL = "Unknown"
DEFAULT_THRESHOLD = 0.3
DEFAULT_RUN_THRESHOLD = 0.4

# Database
VISUALIZE_SUFFIX = "_visualize"
DEFAULT_CHECK_INTERVAL = 5

LOG_LEVEL = os.environ.get("FACEWATCH_LOG_LEVEL", "INFO")

# Font candidates for unicode names (macOS/Windows/Linux). CJK fonts come first
# so that DejaVuSans does not win for names it cannot render.
FONT_LIST = [
    # macOS
    "/System/Library/Fonts/STHeiti Medium.ttc",
    "/System/Library/Fonts/AppleGothic.ttf",
    "/Library/Fonts/Arial Unicode.ttf",
    # Windows
    "C:\\Windows\\Fonts\\msyh.ttc",
    "C:\\Windows\\Fonts\\arialuni.ttf",
    # Linux
    "/usr/share/fonts/opentype/noto/NotoSansCJK-Regular.ttc",
    "/usr/share/fonts/truetype/noto/NotoSansCJK-Regular.ttc",
    "/usr/share/fonts/truetype/wqy/wqy-zenhei.ttc",
    "/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf",
    "/usr/share/fonts/truetype/freefont/FreeSans.ttf",
]
