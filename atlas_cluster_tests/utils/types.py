import pathlib as pl
import re

FileType = str | pl.Path
# Regex given either as a string or as an already compiled pattern
PatternType = str | re.Pattern[str]
