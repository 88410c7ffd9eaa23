"""Backend for FileForge: per-request file transformations with self-cleaning outputs.

Route handlers stay thin; this package holds:
- per-request workspaces (uploads are scratch, outputs outlive the request)
- artifact lifecycle: sibling timestamp markers, deferred deletion after
  download, an absolute retention sweep, and restart hydration
- path safety for user-supplied request ids and filenames
- the transformations themselves

Nothing here needs a database: the output folder and its markers are the whole
state, so a restart recovers by walking it.
"""
