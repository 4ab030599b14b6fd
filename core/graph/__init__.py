"""core/graph — In-process signal graph.

Pure computation: processors, the node arena with snapshot publication, and
block rendering.  Threads and audio devices live in infrastructure/audio.py.
"""
