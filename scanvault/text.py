"""Centralized user-facing text for scanvault."""

from __future__ import annotations


class Styles:
    ERROR = "red"
    WARNING = "yellow"
    SUCCESS = "green"
    INFO = "dim"
    TITLE = "bold cyan"
    TABLE_HEADER = "bold magenta"


class Messages:
    APP_HELP = "scanvault - cached rule-based text scanning with versioned invalidation."
    HELP_SCAN = "Scan text and print flagged spans with suggested rewrites."
    HELP_SCAN_TEXT = "Text blocks to scan. Each argument is scanned separately."
    HELP_SCAN_FILE = "Read a text block from a file (repeatable)."
    HELP_SCAN_JSON = "Print results as JSON instead of a table."
    HELP_SCAN_READ_THROUGH = "Consult the durable store on cache misses before running rules."
    HELP_SCAN_STATS = "Print cache statistics for this run after the results."
    HELP_RELOAD = "Activate a new ruleset version; cached results of older versions stop being served."
    HELP_RELOAD_VERSION = "New ruleset version (must sort after the current one)."
    HELP_RELOAD_FORCE = "Allow a version that does not sort after the current one."
    HELP_RULES = "List the built-in rules."
    HELP_CACHE = "Inspect or maintain the durable scan store."
    HELP_CACHE_LIST = "List the most recent durable entries."
    HELP_CACHE_LIMIT = "Maximum number of entries to list."
    HELP_CACHE_CLEAR = "Delete every durable entry."
    HELP_CACHE_PRUNE = "Delete expired durable entries and trim to the configured size."
    HELP_FEEDBACK = "Record or list accepted/rejected verdicts on scan results."
    HELP_FEEDBACK_KEY = "Scan key from 'scan --json'. Omit to list recorded feedback."
    HELP_FEEDBACK_VERDICT = "accepted or rejected."
    HELP_FEEDBACK_RULE = "Rule id the verdict is about (default: the whole result)."
    HELP_FEEDBACK_NOTE = "Free-form note stored with the verdict."
    HELP_FEEDBACK_RULESET = "Ruleset version the result was produced under (default: active version)."
    HELP_FEEDBACK_LIST = "List recorded feedback, newest first."
    HELP_CONFIG = "Show or change configuration stored in ~/.scanvault/config.json."
    HELP_SHOW_CONFIG = "Show current configuration."
    HELP_SET_CAPACITY = "Set the in-memory cache capacity (entries)."
    HELP_SET_TTL = "Set the entry time-to-live in seconds."
    HELP_SET_FILL_TIMEOUT = "Set the rule engine timeout in milliseconds."
    HELP_SET_SHARDS = "Set the number of LRU shards."
    HELP_SET_DURABLE = "Enable or disable write-through to the durable store (true/false)."
    HELP_SET_READ_THROUGH = "Enable or disable durable read-through on misses (true/false)."
    HELP_SET_LOG_LEVEL = "Set the log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)."

    ERROR_NO_INPUT = "Nothing to scan. Pass text arguments or --file."
    ERROR_FILE_READ = "Unable to read {path}: {reason}"
    ERROR_BOOLEAN_INVALID = "Invalid boolean value '{value}'. Use true/false."
    ERROR_VERSION_EMPTY = "Ruleset version must not be empty."
    ERROR_VERSION_NOT_NEWER = (
        "Ruleset version {new} does not sort after the active version {current}. "
        "Use --force to switch anyway."
    )
    ERROR_ENGINE_FAILED = "Rule engine failed for {key}: {reason}"
    ERROR_ENGINE_TIMEOUT = "Rule engine did not answer for {key} within {timeout_ms} ms."
    ERROR_WAIT_TIMEOUT = "Stopped waiting for {key} after {timeout}s; the scan continues in the background."
    ERROR_ORCHESTRATOR_CLOSED = "Scan orchestrator is closed."
    ERROR_DURABLE_FAILED = "Durable write failed for {key}: {reason}"
    ERROR_DURABLE_UNREADABLE = "Durable store {path} is unusable: {reason}"
    ERROR_FEEDBACK_VERDICT = "Unknown feedback verdict '{verdict}'. Use one of: {choices}."
    ERROR_FEEDBACK_KEY = "Feedback needs the 64-character scan key printed by 'scan --json'."
    ERROR_FEEDBACK_MISSING_VERDICT = "Give a verdict after the key, e.g. 'scanvault feedback KEY accepted'."
    ERROR_CONFIG_JSON_INVALID = "Config payload must be a JSON object."
    ERROR_CONFIG_VALUE_INVALID = "Invalid value for config field '{field}'."
    ERROR_CONFIG_POSITIVE = "Config field '{field}' must be a positive integer."

    INFO_RELOADED = "Ruleset version {old} -> {new}."
    INFO_CACHE_EMPTY = "Durable store is empty."
    INFO_CACHE_CLEARED = "Removed {count} durable entr{plural}."
    INFO_CACHE_PRUNED = "Pruned {count} durable entr{plural}."
    INFO_FEEDBACK_RECORDED = "Recorded {verdict} feedback #{feedback_id} for {key}@{version}."
    INFO_FEEDBACK_EMPTY = "No feedback recorded."
    INFO_NO_HIGHLIGHTS = "No highlights."
    INFO_CONFIG_UPDATED = "Configuration updated."
    INFO_CONFIG_SUMMARY = (
        "Cache capacity: {capacity}\n"
        "TTL seconds: {ttl}\n"
        "Fill timeout (ms): {timeout}\n"
        "Cache shards: {shards}\n"
        "Fill workers: {workers}\n"
        "Ruleset version: {version}\n"
        "Durable write-through: {durable}\n"
        "Durable read-through: {read_through}\n"
        "Durable max entries: {durable_max}\n"
        "Log level: {log_level}\n"
        "Data directory: {data_dir}"
    )
    INFO_STATS_SUMMARY = (
        "Requests: {requests} | hits: {hits} | misses: {misses} | "
        "fills: {fills} | joined: {joined} | hit rate: {hit_rate}"
    )

    TABLE_TITLE = "Scan results ({source}, ruleset {version})"
    TABLE_HEADER_SPAN = "Span"
    TABLE_HEADER_TEXT = "Text"
    TABLE_HEADER_RULE = "Rule"
    TABLE_HEADER_LABEL = "Label"
    TABLE_HEADER_SEVERITY = "Severity"
    TABLE_HEADER_SUGGESTION = "Suggestion"
    TABLE_RULES_TITLE = "Built-in rules"
    TABLE_HEADER_PATTERN = "Pattern"
    TABLE_CACHE_TITLE = "Durable scan entries"
    TABLE_HEADER_KEY = "Key"
    TABLE_HEADER_VERSION = "Version"
    TABLE_HEADER_HIGHLIGHTS = "Highlights"
    TABLE_HEADER_SCANNED = "Scanned at"
    TABLE_FEEDBACK_TITLE = "Recorded feedback"
    TABLE_HEADER_VERDICT = "Verdict"
    TABLE_HEADER_NOTE = "Note"
    TABLE_HEADER_RECORDED = "Recorded at"
    SOURCE_CACHE = "cache"
    SOURCE_ENGINE = "engine"
