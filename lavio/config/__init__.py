"""
Configuration Package for lavio.

This package centralizes all the static configuration settings for the library.
By separating configuration from the application logic, it becomes easier to manage
and modify parameters without changing the core code.

This package includes settings for:
- Common settings like logging format, temporary work directories and the
  optional user configuration file (`config.user.yaml`).
- Video settings: JPEG marker codes, the APP0/APP1 field-tagging layouts,
  container codec tags and DV sample aspect ratios.
- Audio settings: PCM codec names for the AVI and Quicktime backends.
"""
