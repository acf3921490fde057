""" Hardware controller drivers. """
