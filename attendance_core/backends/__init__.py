"""Descriptor extractor backends.

- dlib: HOG/CNN detector + ResNet-34 descriptors (128-D) via face_recognition
"""
