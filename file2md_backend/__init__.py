"""Backend for the file2md web converter.

Route handlers in server.py stay thin; this package owns the temporary-artifact
lifecycle around one conversion:
- session ids that carry their own creation time
- staging uploads and mirroring extracted images per session
- streamed ZIP packaging of markdown + images
- age-based cleanup, triggered on demand or by incoming traffic

Security note:
Session ids double as capability tokens for fetching a session's images. They
expire after the retention window, and every served name is reduced to a
basename and joined inside the session sandbox.
"""
