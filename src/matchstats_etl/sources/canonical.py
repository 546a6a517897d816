from .base import build_source_spec

FORMAT = "canonical"

DEFAULTS = {
    "format": FORMAT,
    "type": "paged",
    "competition_param": "competition_id",
    "season_param": "season_label",
    "page_param": "page",
    "page_size": 100,
    "limit_param": "page_size",
    "records_path": ["data"],
}


def get_spec(name, cfg):
    return build_source_spec(name, cfg, DEFAULTS)
