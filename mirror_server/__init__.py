"""
Mirror Server module.

FastAPI application receiving GitHub push webhooks and serving run status.
Runs are executed by mirror_controller; the server only records them.
"""
