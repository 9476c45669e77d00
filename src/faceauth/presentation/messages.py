from typing import Optional

# Display strings for decision keys. Sessions only ever emit the keys.
GUIDE_TEXT = {
    # quality gate
    "NO_FACE": "No face detected. Please look at the camera.",
    "FACE_TOO_SMALL": "Move closer to the camera.",
    "YAW_TOO_LARGE": "Face the camera (turn less to the side).",
    "PITCH_TOO_LARGE": "Face the camera (tilt less up or down).",
    "TOO_BLURRY": "Hold the camera steady.",
    "TOO_DARK": "Move to a brighter place.",
    "TOO_BRIGHT": "Avoid direct light.",
    # framing
    "NO_ROI_CANDIDATE": "Fit your face inside the guide.",
    "OUTSIDE_GUIDE": "Fit your face inside the guide.",
    "TARGET_UNSTABLE": "Hold still.",
    "GALLERY_LOADING": "Preparing...",
    # enrollment
    "ARMED": "Fit your face inside the guide.",
    "CAPTURING": "Hold still...",
    "COMMITTING": "Saving...",
    "ENROLL_SUCCESS": "Enrollment complete.",
    "EXTRACT_FAIL": "Enrollment failed. Please try again.",
    "PERSIST_FAIL": "Enrollment failed (could not save).",
    # authentication
    "AUTH_SUCCESS": "Verified.",
    "SUCCESS": "Verified.",
    "FAIL_MATCH": "Face not recognised.",
    "FAIL_LOW_MARGIN": "Could not decide. Please try again.",
    "FAIL_INTERNAL": "Something went wrong. Please try again.",
    "FAIL_LIVENESS": "Liveness check failed.",
    "FAIL_QUALITY": "Image quality too low.",
    "FAIL_CAMERA": "Camera unavailable.",
    "NO_REGISTERED_FACES": "No registered faces.",
    # liveness
    "TURN_LEFT": "Turn your head to the left.",
    "TURN_RIGHT": "Turn your head to the right.",
    "LOOK_CENTER": "Look straight at the camera.",
    "BLINK": "Blink your eyes.",
    "LIVENESS_PASSED": "Liveness check passed.",
    "TIMEOUT": "Time is up. Please try again.",
    "YAW_UNAVAILABLE": "Head pose unavailable.",
    "DETECTION_FAIL": "Face tracking unavailable.",
}


def guide_text(key: Optional[str], default: str = "") -> str:
    if not key:
        return default
    return GUIDE_TEXT.get(key, default or key)
