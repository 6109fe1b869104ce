"""Entry point: python -m fpl_live"""

import sys

from fpl_live.logging_config import get_logger, setup_logging

setup_logging()
log = get_logger("fpl_live")


def main() -> int:
    from fpl_live import config
    from fpl_live.api import create_app
    from fpl_live.api.live_bp import LiveServices
    from fpl_live.api.sse import broadcast_events
    from fpl_live.data.fpl_api import FPLClient
    from fpl_live.db.repositories import (
        EventLogRepository,
        GameweekResultRepository,
        LiveStateRepository,
        ScoreRepository,
    )
    from fpl_live.events.detector import EventDetector
    from fpl_live.league.insights import LeagueInsights
    from fpl_live.live.state import LiveState
    from fpl_live.live.tracker import LiveTracker
    from fpl_live.scheduler.polling import AdaptivePollingScheduler

    try:
        config.validate()
    except ValueError as exc:
        log.error("%s", exc)
        return 1

    client = FPLClient()
    state = LiveState()
    score_repo = ScoreRepository()
    detector = EventDetector(EventLogRepository(), LiveStateRepository())
    tracker = LiveTracker(
        client, detector, state, score_repo, GameweekResultRepository(),
        on_events=broadcast_events,
    )
    scheduler = AdaptivePollingScheduler(tracker, client)

    app = create_app(LiveServices(
        state=state,
        detector=detector,
        score_repo=score_repo,
        upstream_status=client.status,
        scheduler=scheduler,
        insights=LeagueInsights(client),
    ))

    log.info("Tracking league %d", config.data_cfg.league_id)
    scheduler.start()
    try:
        app.run(host=config.server_cfg.host, port=config.server_cfg.port, debug=False, threaded=True)
    finally:
        scheduler.stop()
        client.cache.shutdown()
    return 0


if __name__ == "__main__":
    sys.exit(main())
