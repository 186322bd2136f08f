"""Backend for the global clipboard service.

Route handlers in server.py stay thin; the logic lives here:
- ItemStore: expiring text/file items in a SQL table
- BlobStore: file payloads on disk, deleted together with their rows
- ExpirySweeper: scheduled and on-demand removal of expired items

Security note:
Item ids are unguessable UUID4 strings and double as download capabilities.
Everything else sits behind the single shared API key.
"""
