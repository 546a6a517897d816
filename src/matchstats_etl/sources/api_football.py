from .base import build_source_spec

FORMAT = "api_football"

# fixtures are listed per league/season, then events and lineups are fetched
# per fixture; starting XI entries become "played" markers
DEFAULTS = {
    "format": FORMAT,
    "type": "fixture_fanout",
    "base_url": "https://v3.football.api-sports.io",
    "path": "/fixtures",
    "events_path": "/fixtures/events",
    "events_match_param": "fixture",
    "competition_param": "league",
    "season_param": "season",
    "records_path": ["response"],
    "events_records_path": ["response"],
    "lineups_path": "/fixtures/lineups",
    "lineups_records_path": ["response"],
    "lineup_team_path": ["team"],
    "lineup_players_path": ["startXI"],
    "lineup_player_path": ["player"],
    "fixture_id_path": ["fixture", "id"],
    "fixture_status_path": ["fixture", "status", "short"],
    "finished_statuses": ["FT", "AET", "PEN"],
    "api_key_env": "API_FOOTBALL_KEY",
    "api_key_header": "x-apisports-key",
}


def get_spec(name, cfg):
    return build_source_spec(name, cfg, DEFAULTS)
