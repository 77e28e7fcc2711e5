"""
Services Package for lavio.

This package contains the service layer of the library: everything that
operates on JPEG data or on open media files.

- **Marker Scanner (`marker_scanner`):**
  Locates segment boundaries in a JPEG field without decoding it.

- **Field Tagger (`field_tagger`):**
  Writes and reads the field-order metadata of interlaced frames, in the APP0
  "AVI1" layout for AVI and JPEG streams and the APP1 'mjpg' layout for
  Quicktime.

- **Sessions (`session`):**
  `MediaSession` and its per-format variants, opened with `open_output_file`
  and `open_input_file`.

- **Format Probe (`format_probe`) and DV decoder (`dv_decoder`):**
  Classify a file opened for reading.

- **Backends (`backends`, `ffmpeg_container`):**
  The container writer/reader interfaces, their registry, and the ffmpeg-backed
  AVI and Quicktime implementations.

- **Logging Service (`ErrorLog`):**
  Appends failed backend commands to a plain text file, separate from the
  real-time console logging.
"""
