from .base import build_source_spec

FORMAT = "highlightly"

DEFAULTS = {
    "format": FORMAT,
    "type": "fixture_fanout",
    "base_url": "https://sports.highlightly.net/football",
    "path": "/matches",
    "events_path": "/events/{match_id}",
    "competition_param": "leagueId",
    "season_param": "season",
    "page_param": "offset",
    "page_start": 0,
    "page_step": 100,
    "page_size": 100,
    "limit_param": "limit",
    "records_path": ["data"],
    "events_records_path": [],
    "fixture_id_path": ["id"],
    "fixture_status_path": ["state", "description"],
    "finished_statuses": ["Finished", "Finished after extra time", "Finished after penalties"],
    "api_key_env": "HIGHLIGHTLY_API_KEY",
    "api_key_header": "x-rapidapi-key",
}


def get_spec(name, cfg):
    return build_source_spec(name, cfg, DEFAULTS)
