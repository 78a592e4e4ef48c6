"""Compatibility entry point: `python face_recognizer.py -i photo.jpg -d db/`.

The implementation lives in `facewatch.cli`.
"""

from facewatch.cli import main

if __name__ == "__main__":
    raise SystemExit(main())
