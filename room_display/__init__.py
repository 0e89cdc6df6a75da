# Package initializer for the room display backend.

"""
The ``room_display`` package serves a meeting room's busy/free status and
agenda, sourced from a cloud calendar, to a wall-mounted display.

Modules:

- ``config``: application settings loaded from environment variables.
- ``errors``: exception types for configuration, auth and fetch failures.
- ``models``: Pydantic models for events, occupancy and API responses.
- ``occupancy``: pure occupancy resolution and agenda day bucketing.
- ``graph_client``: token acquisition and calendar queries.
- ``sources``: live and fixture data sources.
- ``monitor``: background refresh and clock tasks.
- ``main``: the FastAPI application factory.

"""
