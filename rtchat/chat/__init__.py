"""Chat core: data model and the channel registry session."""
