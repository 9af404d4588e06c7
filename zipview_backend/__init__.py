"""Backend utilities for ZipView archive workspaces.

This package intentionally keeps FastAPI route handlers thin:
- path validation against a single workspaces root
- ZIP import with Zip Slip protection and wrapper-folder flattening
- ordered file trees and rename/delete/read operations

Security note:
Every client-supplied path is checked by PathGuard before any filesystem
access, and error messages never expose absolute filesystem paths.
"""
