"""Constants for the build loop."""

# Loop limits
LOOP_MAX_ITERATIONS = 50
MAX_RETRIES_PER_STATE = 3
MAX_RECOVERIES = 3

# Timeout recovery backoff: base * 2^min(attempt, cap)
BACKOFF_BASE_SECONDS = 1.0
BACKOFF_CAP_EXPONENT = 3

# Pause between phases
STEP_DELAY_SECONDS = 0.5

# External waits
RESPONSE_TIMEOUT_SECONDS = 120.0
STABILITY_WINDOW_SECONDS = 2.5
STABILITY_POLL_SECONDS = 0.5
BUILD_TIMEOUT_SECONDS = 720.0
BUILD_POLL_INTERVAL_SECONDS = 12.0

DEFAULT_BASE_DIR = "~/.agentic-build-loop"
DEFAULT_EXTRACTION_MODE = "INLINE_BLOCK"

# Well-known file names under the base directory
OUTPUT_FILE = "ai-output.txt"
CHECKPOINT_FILE = "loop_state.json"
FINGERPRINT_FILE = "last_error_fingerprint.json"
COMPLETION_FLAG_FILE = "build_complete.flag"
ERROR_LOGS_DIR = "build_error_logs"
ERROR_SUMMARY_FILE = "error_summary.txt"
ERROR_FILES_FILE = "error_files.txt"
REPORTS_DIR = "reports"

# Prompts sent back to the chat surface
STALE_ERROR_PROMPT = (
    "The build is still failing with the same errors as the previous attempt. "
    "Please try a different approach or check for structural issues."
)

FRESH_ERROR_PROMPT = (
    "The build failed. The error logs are attached below. "
    "Please analyze the errors and provide corrected code."
)
