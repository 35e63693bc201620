"""
mongoimage integration tests

These tests start real containers of the image named by IMAGE_NAME and
drive them through the client binary shipped inside it. They are skipped
when docker is not reachable or IMAGE_NAME is not set.
"""
