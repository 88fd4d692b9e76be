"""
hybridkb Setup Script

Install with: pip install -e .
Tests: pip install -e ".[test]"
"""

from setuptools import setup, find_packages

setup(
    name='hybridkb',
    version='0.1.0',
    description='Adaptive hybrid retrieval (FTS5 + vectors + entities) with an LLM-extracted knowledge graph',
    packages=find_packages(include=['hybridkb', 'hybridkb.*']),
    package_data={
        'hybridkb.config': ['*.yaml'],
    },
    install_requires=[
        'sqlalchemy>=2.0.0',
        'aiosqlite>=0.19.0',
        'greenlet>=3.0.0',
        'pydantic>=2.5.0',
        'pyyaml>=6.0.1',
        'numpy>=1.26.0',
        'aiohttp>=3.9.0',
        'structlog>=23.2.0',
        'falkordb>=1.0.0',
        'qdrant-client>=1.10.0',
        'sentence-transformers>=2.2.0',
        'torch>=2.0.0',
    ],
    extras_require={
        'test': [
            'pytest>=7.4.0',
            'pytest-asyncio>=0.23.0',
        ],
    },
    python_requires='>=3.11',
    classifiers=[
        'Development Status :: 3 - Alpha',
        'Intended Audience :: Developers',
        'Intended Audience :: Science/Research',
        'License :: OSI Approved :: MIT License',
        'Programming Language :: Python :: 3.11',
        'Programming Language :: Python :: 3.12',
        'Topic :: Scientific/Engineering :: Artificial Intelligence',
        'Topic :: Text Processing :: Indexing',
    ],
)
