"""Naming conventions shared by the Glide client, the sync engine and the resolver."""

# Row identity assigned by Glide and its mirror column in destination tables
ROW_ID_FIELD = "$rowID"
ROW_ID_COLUMN = "glide_row_id"

# Destination columns holding a reference to another table's glide_row_id
RELATIONSHIP_COLUMN_PREFIX = "rowid_"
DESTINATION_TABLE_PREFIX = "gl_"
