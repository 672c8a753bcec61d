import logging

machopatch_logger = logging.getLogger("machopatch")
