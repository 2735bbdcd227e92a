"""Fasten: declarative attributes and polymorphic dependencies for Python objects.

Fasten lets a host class declare typed attributes and "dependencies": slots
filled by one of several interchangeable implementations ("options"). Loosely
typed input decides which option is built, constructor arguments are completed
from the host's attributes, later attribute writes are pushed into the built
dependencies, and the whole graph serializes to a JSON-compatible map and back.

Key Features:
    - Option selection by explicit envelope, discriminator, shorthand or default
    - Attribute binding with renaming, defaults and transforms
    - Live propagation of host attribute changes into dependencies
    - Lists and keyed maps of dependencies
    - Lossless serialization with type-tagged temporal values
    - Persisted models storing their service configuration in one column

Basic Usage:
    >>> from fasten.host import Host, attribute, dependency
    >>>
    >>> class Pipeline(Host):
    ...     root_dir = attribute(str)
    ...
    ...     @dependency
    ...     def datasource(d):
    ...         d.option("local").set_class(LocalDatasource).bind_attribute("root_dir").default()
    ...         d.option("s3").set_class(S3Datasource).bind_attribute("s3_bucket")
    >>>
    >>> pipeline = Pipeline(root_dir="/data", datasource={"s3": {"s3_bucket": "raw"}})
    >>> pipeline.root_dir = "/other"   # propagated into datasource.root_dir if bound

The package consists of several modules:
    - host: the Host base class and attribute/dependency/preset declarations
    - builders: builders collecting declarations into definitions
    - definition: dependency definitions and the resolution algorithm
    - domain: options, bound attributes and graph entries
    - graph: per-instance dependency graph and propagation
    - attributes: typed attribute store (coercion via pydantic)
    - serializers: serialization to and from JSON-compatible maps
    - model: persisted records wrapping a service host
    - storage: SQLite record storage
    - class_registry: named class lookup for options
    - config: library settings
    - errors: framework-specific exceptions
"""
