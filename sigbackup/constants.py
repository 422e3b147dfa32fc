# Header frame (plaintext, first unit of every archive)
HEADER_LENGTH_SIZE = 4
IV_SIZE = 16
COUNTER_SIZE = 4  # big-endian uint32 stored in iv[0:4]

# Supported header versions
# 0: plaintext u32 length prefix before each frame unit
# 1: the u32 length prefix is encrypted and authenticated with the frame
HEADER_VERSION_PLAIN_LENGTH = 0
HEADER_VERSION_ENCRYPTED_LENGTH = 1
SUPPORTED_HEADER_VERSIONS = (HEADER_VERSION_PLAIN_LENGTH, HEADER_VERSION_ENCRYPTED_LENGTH)

# Key derivation
PASSPHRASE_DIGITS = 30
KEY_STRETCH_ROUNDS = 250_000
BACKUP_KEY_SIZE = 32
KEY_SIZE = 32
HKDF_INFO = b"Backup Export"

# Authentication
MAC_SIZE = 10  # HMAC-SHA256 truncated

# Limits
MAX_FRAME_SIZE = 100 * 1024 * 1024  # 100 MiB
DEFAULT_CHUNK_SIZE = 64 * 1024
DEFAULT_SPOOL_SIZE = 8 * 1024 * 1024

# Artifact kinds and their output directories
ARTIFACT_ATTACHMENT = "attachment"
ARTIFACT_AVATAR = "avatar"
ARTIFACT_STICKER = "sticker"
ARTIFACT_DIRS = {
    ARTIFACT_ATTACHMENT: "attachments",
    ARTIFACT_AVATAR: "avatars",
    ARTIFACT_STICKER: "stickers",
}

# Output types
OUTPUT_RAW = "raw"
OUTPUT_CSV = "csv"
OUTPUT_NONE = "none"
OUTPUT_TYPES = (OUTPUT_RAW, OUTPUT_CSV, OUTPUT_NONE)
