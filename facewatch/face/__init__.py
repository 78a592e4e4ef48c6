"""Face recognition building blocks (extractor/registry/watcher/matcher).

`FaceRecognition` in `recognizer.py` wires them together; the pieces are kept
small so that tests can swap the vision backend for a dummy.
"""
