# This module assembles what the model sees besides the conversation itself

# +---------------------+        +---------------------+
# |   Selected context  |        |     Transcripts     |
# |---------------------|        |---------------------|
# | Objectives          |        | Session messages    |
# | Notes               |        | Mode, title         |
# | Folders             |        | Attached context    |
# +---------------------+        +---------------------+
#           |                               |
#           v                               v
# +------------------------------------------------+
# |                  Prompt                        |
# |------------------------------------------------|
# | --- Selected Context --- ... --- End Context --|
# | User prompt                                    |
# +------------------------------------------------+
#           |
#           v
#   [LLM / tool call] ----> Note store (tools only)
