"""
Document services

Upload pipeline, download/delete coordinator and storage maintenance, composed
over the storage backends and the metadata store.
"""
