"""discosync: keep a rotating family of playlists stocked with new tracks."""

__version__ = "0.1.0"
