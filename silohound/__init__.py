"""SiloHound stack manager.

Single-host lifecycle manager for a project-scoped BloodHound CE stack:
 - one isolated bridge network per project
 - PostgreSQL, Neo4j and BloodHound started in dependency order
 - log-based readiness detection between each service
 - project registry so a stack can be resumed from its working directory
"""
