"""Engine-wide defaults."""

DEFAULT_QUALITY_THRESHOLD = 90
DEFAULT_MAX_ITERATIONS = 5
DEFAULT_CONCAT_SEPARATOR = "\n\n---\n\n"
DEFAULT_MODEL = "openai:gpt-4o-mini"
DEFAULT_CONFIG_PATH = "agentloom.yaml"
FALLBACK_ROUTE_ID = "fallback"
