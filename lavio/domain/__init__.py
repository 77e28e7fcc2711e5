"""
This package contains the core domain types of lavio.

The domain layer holds the vocabulary every other layer speaks: which container
format a session uses, how its fields are ordered, how its chroma is subsampled,
and which errors an operation can raise. It has no dependency on the container
backends or on external tools.

Modules:
    exceptions.py: The structured error taxonomy (`MalformedStreamError`,
                   `OutOfMemoryError`, `UnsupportedFormatError`,
                   `NoAudioTrackError`, `BackendError`) and the `strerror`
                   adapter that renders them as text.
    media.py: Enumerations for container format, interlacing, chroma and raw
              data format, plus the `SampleAspect` value type.
"""
