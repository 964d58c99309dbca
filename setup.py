from setuptools import setup, find_packages

setup(
    name='securestore',
    version='1.0.0',
    description='A typed key-value facade over an access-controlled secure vault.',
    long_description=open('README.md').read(),
    long_description_content_type='text/markdown',
    packages=find_packages(include=['securestore', 'securestore.*']),
    install_requires=[
        'SQLAlchemy>=2.0'
    ],
    classifiers=[
        'Programming Language :: Python :: 3.9',
        'License :: OSI Approved :: MIT License',
        'Operating System :: OS Independent',
    ],
    python_requires='>=3.9',
)
