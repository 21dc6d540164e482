# Utils Package
