"""Centralized constants: statuses, MIME types, labels and defaults."""

# Step / result statuses
STATUS_PASSED = "passed"
STATUS_FAILED = "failed"
STATUS_BROKEN = "broken"
STATUS_SKIPPED = "skipped"

# Marker glyphs for captured console lines
STDOUT_GLYPH = "▸"
STDERR_GLYPH = "⚠"

# Attachment MIME types produced by traced scopes
TRACE_MIME = "application/vnd.allure.playwright-trace"
HAR_MIME = "application/json"

# MIME type -> file extension for text attachments
TEXT_EXTENSIONS = {
    "text/plain": "txt",
    "application/json": "json",
    "text/html": "html",
    "text/csv": "csv",
    "text/xml": "xml",
}
DEFAULT_TEXT_EXTENSION = "txt"

# MIME type -> file extension for binary attachments and copied files
BINARY_EXTENSIONS = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/gif": "gif",
    "image/svg+xml": "svg",
    "application/pdf": "pdf",
    "video/webm": "webm",
    "video/mp4": "mp4",
    TRACE_MIME: "zip",
}
DEFAULT_BINARY_EXTENSION = "bin"

# Fixed label values for results produced under pytest
LANGUAGE = "python"
FRAMEWORK = "pytest"
FRAMEWORK_TAG = "pytest"
THREAD = "main"

SEVERITIES = ("blocker", "critical", "normal", "minor", "trivial")
LINK_TYPES = ("custom", "issue", "tms")

# Run-level documents
ENVIRONMENT_FILENAME = "environment.properties"
CATEGORIES_FILENAME = "categories.json"
RESULT_SUFFIX = "-result.json"
ATTACHMENT_INFIX = "-attachment."

CATEGORIES = [
    {"name": "Assertion failures", "matchedStatuses": [STATUS_FAILED], "messageRegex": ".*"},
    {"name": "Unexpected errors", "matchedStatuses": [STATUS_BROKEN], "messageRegex": ".*"},
]

# Defaults
DEFAULT_OUTPUT_DIR = "allure-results"
DEFAULT_REPORT_DIR = "allure-report"
DEFAULT_FINALIZE_TIMEOUT = 5.0  # seconds
DEFAULT_SOURCE_DIRS = ("src", "tests")
