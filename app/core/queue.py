from rq import Queue
from app.core.config import settings

# Create sync Redis connection for RQ and the refresh locks
import redis as redis_sync
sync_redis_conn = redis_sync.from_url(settings.REDIS_URL)

# Every rating refresh goes through one queue; the per-collection
# Redis lock in app.tasks serializes refreshes of the same collection
# across workers.
rating_queue = Queue(settings.RATING_QUEUE_NAME, connection=sync_redis_conn)
