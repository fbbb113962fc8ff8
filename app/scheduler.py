from apscheduler.schedulers.background import BackgroundScheduler
import atexit
from datetime import datetime
from app.services.change_feed import visit_feed
from app.services.visit_state import count_visits_by_status

scheduler = BackgroundScheduler()


def poll_visit_counts(app, feed=visit_feed):
    """Publish the current visit count per status to the reception feed."""
    current_time_str = datetime.now().strftime("%Y-%m-%d %H:%M:%S")

    try:
        with app.app_context():
            counts = count_visits_by_status()
            changed = feed.publish(counts)

            if changed:
                print(f"[SCHEDULER] {current_time_str} - Visit counts changed: {changed}")
            return changed

    except Exception as e:
        print(f"[SCHEDULER] {current_time_str} - Error polling visit counts: {e}")
        return {}


def init_scheduler(app):
    """Initialize the APScheduler scheduler with Flask app context."""
    interval = app.config.get("VISIT_POLL_SECONDS", 30)

    scheduler.add_job(
        poll_visit_counts,
        "interval",
        seconds=interval,
        args=[app],
        id="poll_visit_counts",
        replace_existing=True,
    )

    if not scheduler.running:
        scheduler.start()
        print(f"[SCHEDULER] Scheduler started (polling visits every {interval}s)")
    else:
        print("[SCHEDULER] Scheduler already running (skipping duplicate start)")

    # Shut down the scheduler when exiting the app
    atexit.register(lambda: scheduler.shutdown(wait=False) if scheduler.running else None)
