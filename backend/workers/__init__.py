# Workers share state with the API through the database.
# The API lifespan runs the HITL expiry loop in-process; to run it standalone
# from backend/:
#   python -m workers.hitl_expiry_worker
