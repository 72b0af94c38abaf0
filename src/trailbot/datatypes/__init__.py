"""
Shared data types: Discord snowflake wrappers and the delayed action record.
"""
