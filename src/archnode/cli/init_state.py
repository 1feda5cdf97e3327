import sys
from pathlib import Path

from archnode.agent.state import NodeStateStore, PersistenceError
from archnode.observability import configure_logging
from archnode.settings import ensure_node_dirs, get_settings


def init_state() -> NodeStateStore:
    settings = get_settings()
    ensure_node_dirs(settings)
    store = NodeStateStore(Path(settings.node_state_file))
    store.init()
    return store


def main() -> None:
    configure_logging(get_settings().log_level)
    try:
        store = init_state()
    except PersistenceError as exc:
        print(f"cannot initialise node state: {exc}", file=sys.stderr)
        raise SystemExit(1) from exc
    print(f"http_port={store.http_port}")
    print(f"http_token={store.http_token}")


if __name__ == "__main__":
    main()
