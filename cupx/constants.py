# End of Central Directory record (ZIP "terminator")
EOCD_SIGNATURE = b"PK\x05\x06"
EOCD_MIN_SIZE = 22  # fixed core, comment follows
EOCD_COMMENT_LEN_OFFSET = 20  # u16 little endian

# Backward scan chunk size used when locating the archive boundary
SCAN_CHUNK_SIZE = 65536  # 64 KiB

# Container layout
PICS_PREFIX = "pics/"
POINTS_NAME = "POINTS.CUP"

# Characters a picture name may not contain
PATH_SEPARATORS = ("/", "\\")

# Writer defaults
SPOOL_MAX_SIZE = 8 * 1024 * 1024  # in-memory limit before spilling to disk
COPY_BUFFER_SIZE = 1024 * 1024
