"""
Per-protocol connectors.

Modules:
    config: Typed connection configs and credential envelope fields
    base: Connector interface and result types
    registry: DataSourceType -> connector mapping
    sources: PostgreSQL, MySQL, MongoDB, REST, GraphQL, S3, Google Sheets, CSV
"""
