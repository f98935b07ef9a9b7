from prometheus_client import Counter, Histogram

# HTTP request metrics
HTTP_REQUESTS_TOTAL = Counter(
    "homework_validator_http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status_class"],
)
HTTP_REQUEST_DURATION_SECONDS = Histogram(
    "homework_validator_http_request_duration_seconds",
    "Duration of HTTP requests in seconds",
    ["method", "path"],
)

# Interview flow
PHASE_TRANSITIONS_TOTAL = Counter(
    "homework_validator_phase_transitions_total",
    "Session phase transitions",
    ["from_phase", "to_phase"],
)
QUESTION_ROUNDS_TOTAL = Counter(
    "homework_validator_question_rounds_total",
    "Question/answer rounds by outcome",
    ["outcome"],
)
ADVANCES_TOTAL = Counter(
    "homework_validator_advances_total",
    "Topic advance attempts",
    ["reason", "outcome"],
)
SUMMARY_TOTAL = Counter(
    "homework_validator_summary_total",
    "Final assessment outcomes",
    ["outcome"],
)

# Collaborator latency (analyze, question, summary, transcribe, synthesize)
GENERATION_SECONDS = Histogram(
    "homework_validator_generation_seconds",
    "Duration of external generation calls in seconds",
    ["operation", "outcome"],
)
