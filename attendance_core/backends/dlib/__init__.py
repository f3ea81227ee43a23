"""dlib backend (face_recognition library).

Components:
- DlibDescriptorExtractor: single-face detection, landmarks and 128-D descriptor
"""

from attendance_core.backends.dlib.extractor import DlibDescriptorExtractor

__all__ = [
    "DlibDescriptorExtractor",
]
