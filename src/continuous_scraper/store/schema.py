"""DDL for the tables the pipeline reads and writes.

Migrations are owned elsewhere; ``Database.ensure_schema`` applies this for
local runs and tests only.
"""

SCHEMA = """
CREATE TABLE IF NOT EXISTS scraping_queue (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    url TEXT NOT NULL,
    category TEXT NOT NULL DEFAULT 'generic',
    priority INTEGER NOT NULL DEFAULT 0,
    status TEXT NOT NULL DEFAULT 'pending'
        CHECK (status IN ('pending', 'processing', 'completed', 'failed')),
    fetch_mode TEXT CHECK (fetch_mode IS NULL OR fetch_mode IN ('http', 'headless')),
    submitted_at TEXT NOT NULL,
    started_at TEXT,
    completed_at TEXT,
    next_attempt_at TEXT,
    retry_count INTEGER NOT NULL DEFAULT 0,
    max_retries INTEGER NOT NULL DEFAULT 3,
    error_message TEXT,
    result_summary TEXT,
    CHECK (retry_count <= max_retries),
    CHECK (status != 'processing' OR started_at IS NOT NULL),
    CHECK (status NOT IN ('completed', 'failed') OR completed_at IS NOT NULL)
);
CREATE INDEX IF NOT EXISTS idx_queue_claim ON scraping_queue(status, priority DESC, submitted_at);
CREATE INDEX IF NOT EXISTS idx_queue_url ON scraping_queue(url);

CREATE TABLE IF NOT EXISTS archived_urls (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    url TEXT NOT NULL,
    content_hash TEXT NOT NULL,
    storage_key TEXT NOT NULL,
    first_archived_at TEXT NOT NULL,
    last_seen_at TEXT NOT NULL,
    last_verified_at TEXT,
    metadata TEXT,
    UNIQUE (url, content_hash)
);
CREATE INDEX IF NOT EXISTS idx_archived_url ON archived_urls(url, last_seen_at);

CREATE TABLE IF NOT EXISTS canonical_persons (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    canonical_name TEXT NOT NULL,
    first_name TEXT NOT NULL,
    middle_name TEXT,
    last_name TEXT NOT NULL DEFAULT '',
    suffix TEXT,
    first_soundex TEXT NOT NULL DEFAULT '',
    last_soundex TEXT NOT NULL DEFAULT '',
    first_metaphone TEXT NOT NULL DEFAULT '',
    last_metaphone TEXT NOT NULL DEFAULT '',
    sex TEXT,
    birth_year_estimate INTEGER,
    death_year_estimate INTEGER,
    primary_state TEXT,
    primary_county TEXT,
    person_type TEXT NOT NULL DEFAULT 'ambiguous',
    verification_status TEXT NOT NULL DEFAULT 'unverified',
    confidence_score REAL NOT NULL DEFAULT 0.5,
    source_url TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_canonical_soundex ON canonical_persons(last_soundex, first_soundex);
CREATE INDEX IF NOT EXISTS idx_canonical_metaphone ON canonical_persons(last_metaphone, first_metaphone);
CREATE INDEX IF NOT EXISTS idx_canonical_name ON canonical_persons(canonical_name COLLATE NOCASE);

CREATE TABLE IF NOT EXISTS name_variants (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    canonical_person_id INTEGER NOT NULL REFERENCES canonical_persons(id) ON DELETE CASCADE,
    variant_name TEXT NOT NULL,
    source_url TEXT,
    source_type TEXT,
    match_method TEXT NOT NULL,
    match_confidence REAL NOT NULL,
    levenshtein_distance INTEGER,
    created_at TEXT NOT NULL,
    UNIQUE (canonical_person_id, variant_name, source_url)
);
CREATE INDEX IF NOT EXISTS idx_variants_name ON name_variants(variant_name COLLATE NOCASE);

CREATE TABLE IF NOT EXISTS unconfirmed_persons (
    lead_id INTEGER PRIMARY KEY AUTOINCREMENT,
    full_name TEXT NOT NULL,
    person_type TEXT NOT NULL CHECK (person_type IN ('owner', 'enslaved', 'ambiguous')),
    source_url TEXT NOT NULL,
    source_page_title TEXT,
    context_text TEXT,
    locations TEXT,
    relationships TEXT,
    gender TEXT,
    birth_year INTEGER,
    confidence_score REAL NOT NULL DEFAULT 0.5,
    status TEXT NOT NULL DEFAULT 'needs_review'
        CHECK (status IN ('needs_review', 'pending', 'rejected', 'linked')),
    canonical_person_id INTEGER REFERENCES canonical_persons(id),
    rejection_reason TEXT,
    extraction_method TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    UNIQUE (full_name, source_url, person_type),
    CHECK (status != 'linked' OR canonical_person_id IS NOT NULL),
    CHECK (status != 'rejected' OR rejection_reason IS NOT NULL)
);
CREATE INDEX IF NOT EXISTS idx_unconfirmed_status ON unconfirmed_persons(status);

CREATE TABLE IF NOT EXISTS name_match_queue (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    unconfirmed_name TEXT NOT NULL,
    unconfirmed_person_id INTEGER REFERENCES unconfirmed_persons(lead_id),
    candidate_canonical_ids TEXT NOT NULL,
    candidate_scores TEXT NOT NULL,
    location_context TEXT,
    source_url TEXT,
    source_context TEXT,
    priority INTEGER NOT NULL DEFAULT 3,
    status TEXT NOT NULL DEFAULT 'pending' CHECK (status IN ('pending', 'resolved', 'abandoned')),
    resolution TEXT CHECK (resolution IS NULL OR resolution IN
        ('linked_existing', 'created_new', 'marked_duplicate', 'not_a_person')),
    resolved_by TEXT,
    resolved_at TEXT,
    resolution_notes TEXT,
    created_at TEXT NOT NULL,
    CHECK (status != 'resolved' OR resolution IS NOT NULL)
);
CREATE UNIQUE INDEX IF NOT EXISTS idx_match_queue_pending
    ON name_match_queue(unconfirmed_name, source_url) WHERE status = 'pending';
CREATE INDEX IF NOT EXISTS idx_match_queue_priority ON name_match_queue(status, priority DESC);

CREATE TABLE IF NOT EXISTS relationships (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    subject_id INTEGER NOT NULL REFERENCES canonical_persons(id) ON DELETE CASCADE,
    object_id INTEGER NOT NULL REFERENCES canonical_persons(id) ON DELETE CASCADE,
    type TEXT NOT NULL CHECK (type IN ('parent_of', 'spouse_of', 'enslaved_by', 'sibling_of')),
    source_url TEXT NOT NULL,
    confidence_score REAL NOT NULL DEFAULT 0.5,
    created_at TEXT NOT NULL,
    UNIQUE (subject_id, object_id, type, source_url),
    CHECK (type NOT IN ('parent_of', 'spouse_of') OR subject_id != object_id)
);

CREATE TABLE IF NOT EXISTS watchdog_alerts (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    alert_type TEXT NOT NULL,
    url TEXT NOT NULL,
    archived_url_id INTEGER REFERENCES archived_urls(id),
    details TEXT,
    acknowledged INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_alerts_url ON watchdog_alerts(url);

CREATE TABLE IF NOT EXISTS ancestor_climb_sessions (
    id TEXT PRIMARY KEY,
    root_id TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'in_progress'
        CHECK (status IN ('in_progress', 'completed', 'failed')),
    frontier TEXT NOT NULL,
    visited TEXT NOT NULL,
    matches TEXT NOT NULL,
    visits INTEGER NOT NULL DEFAULT 0,
    max_generations INTEGER NOT NULL,
    cutoff_year INTEGER NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
"""

TABLES = (
    "scraping_queue",
    "archived_urls",
    "canonical_persons",
    "name_variants",
    "unconfirmed_persons",
    "name_match_queue",
    "relationships",
    "watchdog_alerts",
    "ancestor_climb_sessions",
)
