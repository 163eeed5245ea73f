"""Shot Merge: pairs screenshots dropped into a work folder.

Takes the two oldest images at a time, stamps the bottom-right corner of
the first onto the second, and files the inputs into processed/error
folders and the results into done/.
"""

__version__ = "1.0.0"
__app_name__ = "Shot Merge"
