"""Metrics module for Usage Gate."""

from prometheus_client import (
    Counter,
    Gauge,
    Histogram,
)

# Counter to track REST API calls
# This will be used to count how many times each API endpoint is called
# and the status code of the response
rest_api_calls_total = Counter(
    "ug_rest_api_calls_total", "REST API calls counter", ["path", "status_code"]
)

# Histogram to measure response durations
# This will be used to track how long it takes to handle requests
response_duration_seconds = Histogram(
    "ug_response_duration_seconds", "Response durations", ["path"]
)

# Ceilings in effect, refreshed whenever configuration is (re)loaded
configured_limit = Gauge(
    "ug_configured_limit",
    "Configured admission ceilings, zero meaning no cap",
    ["resource", "horizon"],
)

# Metric that counts admission checks and their outcome
admission_checks_total = Counter(
    "ug_admission_checks_total", "Admission checks counter", ["resource", "outcome"]
)

# Metric that counts denials for each limit
admission_denials_total = Counter(
    "ug_admission_denials_total", "Admission denials counter", ["denial_kind"]
)

# Units committed after successful work (tokens, pages)
units_committed_total = Counter(
    "ug_units_committed_total", "Units committed counter", ["resource"]
)

# OCR jobs waiting or running
ocr_active_jobs = Gauge("ug_ocr_active_jobs", "OCR jobs queued or processing")

# OCR jobs by terminal status
ocr_jobs_finished_total = Counter(
    "ug_ocr_jobs_finished_total", "Finished OCR jobs counter", ["status"]
)
