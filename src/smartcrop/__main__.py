from smartcrop.cropper import main

if __name__ == "__main__":
    main()
