from .base import build_source_spec

FORMAT = "thesportsdb"

# the key is part of the URL path rather than a header
DEFAULTS = {
    "format": FORMAT,
    "type": "fixture_fanout",
    "base_url": "https://www.thesportsdb.com/api/v1/json/{api_key}",
    "path": "/eventsseason.php",
    "events_path": "/lookuptimeline.php",
    "events_match_param": "id",
    "competition_param": "id",
    "season_param": "s",
    "records_path": ["events"],
    "events_records_path": ["timeline"],
    "fixture_id_path": ["idEvent"],
    "fixture_status_path": ["strStatus"],
    "finished_statuses": ["Match Finished", "FT", "AET", "PEN"],
    "api_key_env": "THESPORTSDB_API_KEY",
}


def get_spec(name, cfg):
    return build_source_spec(name, cfg, DEFAULTS)
